"""
Copyright (c) 2025. All rights reserved.
"""

"""
Synthetic Relation Generator for Join Benchmarks

Writes pairs of CSV relations whose first field is the join key:
- Uniform keys (every key repeats equally often on both sides)
- Zipf-skewed probe side against a build side holding each key once
- Zipf-skewed keys on both sides
- A sharded variant of the Zipf layout, one file per shard

Skewed inputs are what expose partition imbalance and large key-groups in
the reducer, so the generator is the usual companion of a benchmark run.
"""

import argparse
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import List, Optional, TextIO, Tuple

import numpy as np

logger = logging.getLogger(__name__)

RANDOM_STRINGS = 100
CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz123456789"


class Attribute:
    """A non-key column filled from a small pool of random strings."""

    def __init__(self, length: int, rng: Optional[np.random.Generator] = None):
        if length < 0:
            raise ValueError(f"Attribute length must be >= 0, got {length}")
        self.length = length
        self.rng = rng if rng is not None else np.random.default_rng()

        # Pre-generating a pool is much faster than a fresh string per row
        char_indices = self.rng.integers(len(CHARS), size=(RANDOM_STRINGS, length))
        self.random_strings = ["".join(CHARS[i] for i in row) for row in char_indices]

    def generate(self, rng: Optional[np.random.Generator] = None) -> str:
        rng = rng if rng is not None else self.rng
        return self.random_strings[int(rng.integers(RANDOM_STRINGS))]


class KeyType(Enum):
    NUMERIC = "numeric"
    STRING = "string"


def generalized_harmonic(n: int, m: float) -> float:
    """Nth generalized harmonic number of order m: sum of 1 / k^m for k = 1..n."""
    if n < 1:
        return 0.0
    return float(np.sum(1.0 / np.power(np.arange(n, 0, -1, dtype=np.float64), m)))


def get_max_zipf_repeats(n: int, s: float, count: int) -> float:
    """
    Expected number of occurrences of the most frequent key.

    From the Zipf pmf p(k) = 1 / (k^s * H(n, s)), key 1 occurs
    count / H(n, s) times among count draws.

    Args:
        n: Number of distinct keys
        s: Skew exponent
        count: Number of draws
    """
    return count / generalized_harmonic(int(n), s)


def zipf_inverse_cdf(p: float, s: float, n: float,
                     tolerance: float = 0.01, max_iterations: int = 1000) -> int:
    """
    Approximate inverse CDF of a Zipf distribution over n keys.

    Solves CDF(x) = p with Newton's method on the Euler-Maclaurin
    approximation of the generalized harmonic sum. The candidate is clamped
    to at least 1 on every step, so the result is always >= 1.

    Args:
        p: Probability in [0, 1]
        s: Skew exponent (s == 1 uses the logarithmic limit)
        n: Number of distinct keys
        tolerance: Stop once a step moves the candidate by at most this much
        max_iterations: Give up after this many steps and return the candidate

    Returns:
        The key whose cumulative probability reaches p
    """
    if p > 1.0 or p < 0.0:
        raise ValueError(f"p must be between 0 and 1, got {p}")

    x = n / 2

    if s == 1:
        head = 12 * math.log(n)
    else:
        head = 12 * (math.pow(n, 1 - s) - 1) / (1 - s)
    d = p * (head + 6 - 6 * math.pow(n, -s) + s - math.pow(n, -1 - s) * s)

    for _ in range(max_iterations):
        m = math.pow(x, -2 - s)
        mx = m * x
        mxx = mx * x

        if s == 1:
            a_head = 12 * math.log(x)
        else:
            a_head = 12 * (mxx * x - 1) / (1 - s)
        a = a_head + 6 * (1 - mxx) + (s - mx * s) - d
        b = 12 * mxx + 6 * (s * mx) + (m * s * (s + 1))

        new_x = max(1.0, x - a / b)
        if abs(new_x - x) <= tolerance:
            return int(new_x)
        x = new_x

    logger.warning(f"zipf_inverse_cdf did not converge after {max_iterations} iterations "
                   f"(p={p}, s={s}, n={n}), returning {int(x)}")
    return int(x)


class DataGenerator:
    """Generates two relations joinable on their first field."""

    def __init__(self, key_type: KeyType, n_rows: int, attributes: List[Attribute],
                 unique_values: int, seed: Optional[int] = None):
        if n_rows < 0:
            raise ValueError(f"n_rows must be >= 0, got {n_rows}")
        if unique_values < 1:
            raise ValueError(f"unique_values must be >= 1, got {unique_values}")

        self.key_type = key_type
        self.n_rows = n_rows
        self.attributes = attributes
        self.unique_values = unique_values
        self.seed_sequence = np.random.SeedSequence(seed)
        self.rng = np.random.default_rng(self.seed_sequence)

    def format_key(self, key: int) -> str:
        if self.key_type == KeyType.STRING:
            return f"key_{key}"
        return str(key)

    def _row(self, key: int, rng: np.random.Generator) -> str:
        values = [self.format_key(key)] + [attribute.generate(rng) for attribute in self.attributes]
        return ",".join(values) + "\n"

    def write(self, out1: TextIO, out2: TextIO) -> Tuple[int, int]:
        """Uniform keys: row i has key i % unique_values and goes to both outputs."""
        for i in range(self.n_rows):
            row = self._row(i % self.unique_values, self.rng)
            out1.write(row)
            out2.write(row)

        logger.info(f"Wrote {self.n_rows} uniform rows to each relation")
        return self.n_rows, self.n_rows

    def write_zipf(self, out1: TextIO, out2: TextIO, s: float) -> Tuple[int, int]:
        """
        Build side holds every key once in shuffled order; the probe side holds
        n_rows rows with Zipf-distributed keys.
        """
        keys = self.rng.permutation(self.unique_values)
        for key in keys:
            out1.write(self._row(int(key), self.rng))

        for i in range(self.n_rows):
            key = zipf_inverse_cdf(i / self.n_rows, s, self.unique_values)
            out2.write(self._row(key, self.rng))

        logger.info(f"Wrote {self.unique_values} build rows and {self.n_rows} Zipf probe rows (s={s})")
        return self.unique_values, self.n_rows

    def write_zipf_both(self, out1: TextIO, out2: TextIO, s: float) -> Tuple[int, int]:
        """Zipf-distributed keys on both sides; each row goes to both outputs."""
        for i in range(self.n_rows):
            row = self._row(zipf_inverse_cdf(i / self.n_rows, s, self.unique_values), self.rng)
            out1.write(row)
            out2.write(row)

        logger.info(f"Wrote {self.n_rows} Zipf rows to each relation (s={s})")
        return self.n_rows, self.n_rows

    def _write_zipf_shard(self, shard: int, n_threads: int, path1: Path, path2: Path,
                          s: float, seed: np.random.SeedSequence) -> Tuple[int, int]:
        rng = np.random.default_rng(seed)
        keys_per_shard = self.unique_values // n_threads
        rows_per_shard = self.n_rows // n_threads
        first_key = shard * self.unique_values // n_threads
        first_row = shard * self.n_rows // n_threads

        with open(path1, 'w', encoding='utf-8') as out1:
            for key in rng.permutation(keys_per_shard) + first_key:
                out1.write(self._row(int(key), rng))

        with open(path2, 'w', encoding='utf-8') as out2:
            for i in range(rows_per_shard):
                key = zipf_inverse_cdf((i + first_row) / self.n_rows, s, self.unique_values)
                out2.write(self._row(key, rng))

        logger.debug(f"Shard {shard} wrote {keys_per_shard} build rows and {rows_per_shard} probe rows")
        return keys_per_shard, rows_per_shard

    def write_zipf_parallel(self, dir1: str, dir2: str, s: float, n_threads: int) -> Tuple[int, int]:
        """
        Sharded write_zipf: shard t owns a contiguous slice of the key space
        and of the probability range, and writes files dir1/tttt and dir2/tttt.
        Leftover keys and rows of an uneven split are not written.
        """
        if n_threads < 1:
            raise ValueError(f"n_threads must be >= 1, got {n_threads}")

        path1, path2 = Path(dir1), Path(dir2)
        path1.mkdir(parents=True, exist_ok=True)
        path2.mkdir(parents=True, exist_ok=True)

        shard_seeds = self.seed_sequence.spawn(n_threads)
        with ThreadPoolExecutor(max_workers=n_threads) as executor:
            futures = [
                executor.submit(self._write_zipf_shard, shard, n_threads,
                                path1 / f"{shard:04d}", path2 / f"{shard:04d}", s, shard_seeds[shard])
                for shard in range(n_threads)
            ]
            # Wait for every shard; the first failure propagates
            counts = [future.result() for future in futures]

        build_rows = sum(c[0] for c in counts)
        probe_rows = sum(c[1] for c in counts)
        logger.info(f"Wrote {n_threads} shards: {build_rows} build rows, {probe_rows} probe rows (s={s})")
        return build_rows, probe_rows


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="repartition-join-datagen",
        description="Generate two CSV relations joinable on their first field",
    )
    parser.add_argument("output_1", help="LEFT relation file (directory for zipf_parallel)")
    parser.add_argument("output_2", help="RIGHT relation file (directory for zipf_parallel)")
    parser.add_argument("--mode", choices=["uniform", "zipf", "zipf_both", "zipf_parallel"],
                        default="uniform")
    parser.add_argument("--rows", type=int, default=1000, help="Rows per relation (probe side for zipf)")
    parser.add_argument("--unique-values", type=int, default=100, help="Number of distinct keys")
    parser.add_argument("--attributes", type=int, default=2, help="Non-key columns per row")
    parser.add_argument("--attribute-length", type=int, default=8)
    parser.add_argument("--skew", type=float, default=1.0, help="Zipf exponent s")
    parser.add_argument("--threads", type=int, default=4, help="Shards for zipf_parallel")
    parser.add_argument("--key-type", choices=[k.value for k in KeyType], default=KeyType.NUMERIC.value)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    try:
        rng = np.random.default_rng(args.seed)
        attributes = [Attribute(args.attribute_length, rng) for _ in range(args.attributes)]
        generator = DataGenerator(KeyType(args.key_type), args.rows, attributes,
                                  args.unique_values, seed=args.seed)

        if args.mode == "zipf_parallel":
            counts = generator.write_zipf_parallel(args.output_1, args.output_2, args.skew, args.threads)
        else:
            with open(args.output_1, 'w', encoding='utf-8') as out1, \
                    open(args.output_2, 'w', encoding='utf-8') as out2:
                if args.mode == "uniform":
                    counts = generator.write(out1, out2)
                elif args.mode == "zipf":
                    counts = generator.write_zipf(out1, out2, args.skew)
                else:
                    counts = generator.write_zipf_both(out1, out2, args.skew)
    except (ValueError, OSError) as e:
        logger.error(f"Data generation failed: {e}")
        return 1

    print(f"Wrote {counts[0]} rows to {args.output_1} and {counts[1]} rows to {args.output_2}")
    if args.mode != "uniform":
        print(f"Expected repeats of the most frequent key: "
              f"{get_max_zipf_repeats(args.unique_values, args.skew, args.rows):.1f}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
