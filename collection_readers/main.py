import json
import sys
from typing import List, Optional, TextIO

from pydantic import ValidationError

from collection_readers.config.settings import MongoReaderConfig, SqlReaderConfig
from collection_readers.errors import ReaderError
from collection_readers.extract.base_reader import BaseCollectionReader
from collection_readers.extract.mongo_reader import MongoCollectionReader
from collection_readers.extract.sql_reader import SqlCollectionReader
from collection_readers.utils.logger import setup_logger

logger = setup_logger()

PROGRESS_EVERY = 1000


def build_reader(source: str) -> BaseCollectionReader:
    """Builds the reader for 'mongo' or 'sql' from READER_* environment variables."""
    if source == "mongo":
        return MongoCollectionReader(MongoReaderConfig.from_env())
    if source == "sql":
        return SqlCollectionReader(SqlReaderConfig.from_env())
    raise ValueError(f"Unknown source '{source}'. Expected 'mongo' or 'sql'.")


def export_records(reader: BaseCollectionReader, out: TextIO) -> int:
    """
    Drives the reader to the end, writing one JSON object per record.
    The reader is always closed, also on early failure.
    """
    try:
        reader.open()
        while reader.has_next():
            record = reader.get_next()
            out.write(json.dumps(record.model_dump(), ensure_ascii=False) + "\n")

            progress = reader.progress()
            if progress.completed % PROGRESS_EVERY == 0:
                total = "?" if progress.is_indeterminate else progress.total
                logger.info(f"   ...exported {progress.completed}/{total} documents")
    finally:
        reader.close()

    return reader.progress().completed


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point for exporting a collection as JSON lines.
    Usage: collection-readers <mongo|sql> [output_path]
    """
    args = sys.argv[1:] if argv is None else argv
    if not args:
        logger.error("No source specified. Usage: collection-readers <mongo|sql> [output_path]")
        return 1

    source = args[0]
    output_path = args[1] if len(args) > 1 else None
    logger.info(f"Starting export. Source: {source} | Output: {output_path or 'stdout'}")

    try:
        reader = build_reader(source)
        if output_path:
            with open(output_path, "w", encoding="utf-8") as f:
                count = export_records(reader, f)
        else:
            count = export_records(reader, sys.stdout)
    except (ValueError, ValidationError) as e:
        logger.error(f"❌ Invalid configuration: {e}")
        return 1
    except ReaderError as e:
        logger.exception(f"❌ Export Failed: {e}")
        return 1

    logger.info(f"✅ Exported {count} documents.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
