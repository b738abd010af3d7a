"""
Copyright (c) 2025. All rights reserved.
"""
