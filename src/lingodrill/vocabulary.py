import glob
import logging
import os
from typing import Any, Dict, List

import pandas as pd

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("word", "translation")
OPTIONAL_COLUMNS = ("example", "audio_url")


class VocabularyManager:
    """Manages loading and accessing vocabulary sets."""

    def __init__(self, directory: str):
        self.directory = directory
        self.vocab_sets: Dict[str, List[Dict[str, str]]] = {}

    def load_all(self):
        self.vocab_sets = {}
        if not os.path.exists(self.directory):
            os.makedirs(self.directory)
            logger.warning(f"Created directory {self.directory}. Please add CSV files.")

        csv_files = glob.glob(os.path.join(self.directory, "*.csv"))
        for file_path in sorted(csv_files):
            file_name = os.path.splitext(os.path.basename(file_path))[0]
            try:
                df = pd.read_csv(file_path, encoding="utf-8", dtype=str)
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load {file_path}: {e}")
                continue
            if not all(col in df.columns for col in REQUIRED_COLUMNS):
                logger.error(f"Skipping {file_name}: Missing columns.")
                continue
            self.vocab_sets[file_name] = self._to_records(file_name, df)
            logger.info(f"Loaded {len(self.vocab_sets[file_name])} words from {file_name}")

        if not self.vocab_sets:
            logger.warning("No CSV files found. Loading dummy data.")
            dummy = pd.DataFrame(
                {
                    "word": ["Hund", "Katze", "Baum", "Haus", "Wasser"],
                    "translation": ["dog", "cat", "tree", "house", "water"],
                    "example": [
                        "Der Hund schläft.",
                        "Die Katze trinkt Milch.",
                        "Der Baum ist alt.",
                        "Das Haus ist groß.",
                        "Ich trinke Wasser.",
                    ],
                }
            )
            self.vocab_sets["default_dummy"] = self._to_records("default_dummy", dummy)

    @staticmethod
    def _to_records(topic: str, df: pd.DataFrame) -> List[Dict[str, str]]:
        df = df.dropna(subset=list(REQUIRED_COLUMNS))
        df = df.assign(
            word=df["word"].str.strip(), translation=df["translation"].str.strip()
        )
        df = df[(df["word"] != "") & (df["translation"] != "")]
        df = df.drop_duplicates(subset="word").reset_index(drop=True)
        for col in OPTIONAL_COLUMNS:
            if col not in df.columns:
                df[col] = ""
        df = df.fillna("")
        df["vocabulary_id"] = [f"{topic}-{i}" for i in range(len(df))]
        return df[["vocabulary_id", *REQUIRED_COLUMNS, *OPTIONAL_COLUMNS]].to_dict("records")

    def get_words(self, topic: str) -> List[Dict[str, str]]:
        return self.vocab_sets.get(topic, [])

    def get_topics(self) -> List[Dict[str, Any]]:
        topics = []
        for key, words in self.vocab_sets.items():
            display_name = key.replace("_", " ").title()
            topics.append({"id": key, "name": display_name, "count": len(words)})
        topics.sort(key=lambda x: x["name"])
        return topics
