# ======================================================
# retrain.py - train the dual-head CNN from the feedback log
# ======================================================
"""
Reads the labeled uploads collected by the API, trains a fresh model and
persists it through the model store.

    python retrain.py                 # retrain if enough new feedback
    python retrain.py --force         # retrain regardless of the threshold
"""

from pathlib import Path
from typing import Optional

import typer
from loguru import logger

from fruitguard.config import (
    FEEDBACK_CSV,
    FEEDBACK_IMG_DIR,
    LAST_RETRAIN_FILE,
    MIN_NEW_FEEDBACK,
    TrainingConfig,
    default_store,
)
from fruitguard.dataset import load_examples, read_feedback_log
from fruitguard.errors import TrainingError
from fruitguard.training import Trainer

app = typer.Typer(help="FruitGuard retraining")


def read_last_retrain_count(counter_file: Path) -> int:
    if counter_file.exists():
        text = counter_file.read_text().strip()
        if text:
            return int(text)
    return 0


@app.command()
def retrain(
    feedback_csv: Path = typer.Option(FEEDBACK_CSV, help="Feedback log CSV"),
    image_dir: Path = typer.Option(FEEDBACK_IMG_DIR, help="Directory holding uploaded images"),
    counter_file: Path = typer.Option(LAST_RETRAIN_FILE, help="Row count at the last retrain"),
    min_new: int = typer.Option(MIN_NEW_FEEDBACK, help="Minimum new rows needed to retrain"),
    force: bool = typer.Option(False, "--force", help="Ignore the new-feedback threshold"),
    epochs: int = typer.Option(10),
    batch_size: int = typer.Option(32),
    shuffle: bool = typer.Option(False, "--shuffle", help="Shuffle batches each epoch"),
    seed: Optional[int] = typer.Option(None),
):
    # -----------------------------
    # Load feedback
    # -----------------------------
    df = read_feedback_log(feedback_csv)
    if df.empty:
        logger.info("Feedback log is empty. Nothing to retrain.")
        return

    total_feedback = len(df)
    new_feedback_count = total_feedback - read_last_retrain_count(counter_file)
    if not force and new_feedback_count < min_new:
        logger.info(f"Not enough new feedback ({new_feedback_count}/{min_new}). Exiting.")
        return

    logger.info(f"Detected {new_feedback_count} new feedback entries. Retraining...")

    # -----------------------------
    # Prepare data
    # -----------------------------
    examples = load_examples(df, image_dir)
    if not examples:
        logger.info("No valid images found. Exiting.")
        return

    # -----------------------------
    # Train + persist
    # -----------------------------
    store = default_store()
    config = TrainingConfig(epochs=epochs, batch_size=batch_size, shuffle=shuffle, seed=seed)
    trainer = Trainer(store.vocabulary, store, config)
    try:
        trainer.train(examples)
    except TrainingError as e:
        logger.error(f"Retraining failed: {e}")
        raise typer.Exit(code=1)

    # -----------------------------
    # Update retrain counter
    # -----------------------------
    counter_file.write_text(str(total_feedback))
    logger.info("Updated last retrain counter.")
    logger.info("Running API servers keep the previous model until POST /reload.")


if __name__ == "__main__":
    app()
