# ======================================================
# fruitguard/dataset.py - feedback log of labeled uploads
# ======================================================
"""
Operators label uploads through the API; each upload is saved into the
feedback image dir and described by one row of the feedback CSV:

    uploaded_filename,fruit_type,toxicity

``toxicity`` is "toxic", "non-toxic" or "unlabeled"; ``fruit_type`` is a
vocabulary entry or "unlabeled".
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import pandas as pd
from loguru import logger

from fruitguard.config import NON_TOXIC, TOXIC, UNLABELED
from fruitguard.types import TrainingExample

COLUMNS = ["uploaded_filename", "fruit_type", "toxicity"]


def parse_fruit_type(value) -> Optional[str]:
    if not isinstance(value, str) or not value.strip() or value.strip() == UNLABELED:
        return None
    return value.strip()


def parse_toxicity(value) -> Optional[bool]:
    if not isinstance(value, str):
        return None
    value = value.strip().lower()
    if value == TOXIC:
        return True
    if value == NON_TOXIC:
        return False
    if value in ("", UNLABELED):
        return None
    raise ValueError(f"Unknown toxicity label: {value!r}")


def read_feedback_log(csv_path: Path) -> pd.DataFrame:
    csv_path = Path(csv_path)
    if not csv_path.exists():
        return pd.DataFrame(columns=COLUMNS)
    df = pd.read_csv(csv_path, dtype=str)
    missing = [c for c in COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Feedback log {csv_path} is missing columns: {missing}")
    return df


def append_feedback(csv_path: Path, filename: str, fruit_type: str, toxicity: str) -> int:
    """Append one labeled upload. Returns the new row count."""
    csv_path = Path(csv_path)
    csv_path.parent.mkdir(parents=True, exist_ok=True)
    df = read_feedback_log(csv_path)
    entry = {"uploaded_filename": filename, "fruit_type": fruit_type, "toxicity": toxicity}
    df = pd.concat([df, pd.DataFrame([entry])], ignore_index=True)
    df.to_csv(csv_path, index=False)
    return len(df)


def load_examples(df: pd.DataFrame, image_dir: Path) -> list[TrainingExample]:
    """
    Build training examples from feedback rows, in log order.

    Rows with an invalid filename, a missing image file or an unknown
    toxicity label are skipped with a warning. Unlabeled rows are kept;
    training rejects them.
    """
    image_dir = Path(image_dir)
    examples = []
    skipped = 0

    for _, row in df.iterrows():
        filename = row.get("uploaded_filename")
        if not isinstance(filename, str) or not filename.strip():
            logger.warning(f"Skipping invalid filename: {filename}")
            skipped += 1
            continue

        try:
            is_toxic = parse_toxicity(row.get("toxicity"))
        except ValueError as e:
            logger.warning(f"Skipping {filename}: {e}")
            skipped += 1
            continue

        img_path = image_dir / filename
        if not img_path.exists():
            logger.warning(f"Image not found: {img_path}")
            skipped += 1
            continue

        examples.append(
            TrainingExample(
                example_id=filename,
                image=img_path.read_bytes(),
                fruit_type=parse_fruit_type(row.get("fruit_type")),
                is_toxic=is_toxic,
            )
        )

    logger.info(f"Loaded {len(examples)} feedback images. Skipped {skipped} entries.")
    return examples
