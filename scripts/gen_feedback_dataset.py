#!/usr/bin/env python3
"""Synthetic feedback CSV generator.

Generates survey-style CSV files for load testing and demos. Layout:
- Row 1: header (Name, Rating, then one column per free-text question)
- Row 2+: one respondent per row

The output can be imported with `campuspulse import --csv <file>`.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd

POSITIVE_ANSWERS = [
    "The lectures were excellent and very helpful",
    "Great event, I learned a lot",
    "Amazing organisation, thank you",
    "The faculty was supportive and the labs were good",
]
NEUTRAL_ANSWERS = [
    "It was okay",
    "Average session, nothing special",
    "The schedule was as expected",
    "ok",
]
NEGATIVE_ANSWERS = [
    "The sessions were boring and too long",
    "Poor audio quality, very frustrating",
    "Terrible timing, a waste of the afternoon",
    "The room was awful and overcrowded",
]

DEFAULT_QUESTIONS = ["What did you like?", "What could be improved?", "Any other comments?"]


def generate_feedback_frame(
    rows: int,
    questions: list[str],
    *,
    positive_share: float = 0.5,
    negative_share: float = 0.2,
    blank_share: float = 0.1,
    seed: int = 42,
) -> pd.DataFrame:
    """Build a DataFrame of synthetic survey responses.

    Args:
        rows: Number of respondents
        questions: Free-text question column names
        positive_share: Probability that an answer is drawn from the positive pool
        negative_share: Probability that an answer is drawn from the negative pool
        blank_share: Probability that an answer is left empty
        seed: Random seed for reproducible data

    Returns:
        DataFrame with Name, Rating and one column per question
    """
    rng = np.random.default_rng(seed)
    neutral_share = max(0.0, 1.0 - positive_share - negative_share)
    pools = [POSITIVE_ANSWERS, NEUTRAL_ANSWERS, NEGATIVE_ANSWERS]
    weights = np.array([positive_share, neutral_share, negative_share])
    weights = weights / weights.sum()

    data: dict[str, list[str]] = {
        "Name": [f"Student {i + 1}" for i in range(rows)],
        "Rating": rng.integers(1, 6, rows).astype(str).tolist(),
    }
    for question in questions:
        answers = []
        for _ in range(rows):
            if rng.random() < blank_share:
                answers.append("")
                continue
            pool = pools[rng.choice(3, p=weights)]
            answers.append(pool[rng.integers(0, len(pool))])
        data[question] = answers
    return pd.DataFrame(data)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate a synthetic feedback CSV",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s feedback.csv
  %(prog)s big.csv --rows 5000 --questions "Liked" "Disliked"
  %(prog)s grim.csv --positive 0.1 --negative 0.7 --seed 7
        """,
    )
    parser.add_argument("output", type=Path, help="Output CSV path")
    parser.add_argument("--rows", type=int, default=200, help="Number of respondents (default: 200)")
    parser.add_argument("--questions", nargs="+", default=DEFAULT_QUESTIONS, help="Question column names")
    parser.add_argument("--positive", type=float, default=0.5, help="Share of positive answers (default: 0.5)")
    parser.add_argument("--negative", type=float, default=0.2, help="Share of negative answers (default: 0.2)")
    parser.add_argument("--blank", type=float, default=0.1, help="Share of empty answers (default: 0.1)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    args = parser.parse_args()

    if args.rows <= 0:
        print("Error: --rows must be positive", file=sys.stderr)
        return 1
    if args.positive < 0 or args.negative < 0 or args.positive + args.negative > 1:
        print("Error: --positive and --negative must be >= 0 and sum to at most 1", file=sys.stderr)
        return 1

    df = generate_feedback_frame(
        args.rows,
        args.questions,
        positive_share=args.positive,
        negative_share=args.negative,
        blank_share=args.blank,
        seed=args.seed,
    )
    args.output.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(args.output, index=False)
    print(f"Created feedback CSV: {args.output}")
    print(f"  Respondents: {args.rows:,}")
    print(f"  Questions: {len(args.questions)} ({', '.join(args.questions)})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
