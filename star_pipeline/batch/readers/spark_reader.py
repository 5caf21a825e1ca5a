"""
Source reader for file extracts (CSV, JSON, Parquet) using Spark.

Each operational table is expected as one extract named after the table,
e.g. `<extract_dir>/encounters.csv`.
"""

from pathlib import Path
from typing import Any, Iterable

from pyspark.sql import DataFrame, SparkSession
from pyspark.sql.types import StructType

from star_pipeline.observability.logger import get_logger
from star_pipeline.utils.validation import validate_file_path

from .source_reader import SourceReader

logger = get_logger(__name__)

SUPPORTED_FORMATS = ("csv", "json", "parquet")


class FileReader:
    """
    Reads one file into a Spark DataFrame.
    """

    def __init__(self, spark: SparkSession):
        """
        Args:
            spark: Active Spark session
        """
        self.spark = spark

    def read(
        self,
        file_path: str,
        file_format: str = "csv",
        schema: StructType | None = None,
        header: bool = True,
        delimiter: str = ",",
    ) -> DataFrame:
        """
        Read file into Spark DataFrame.

        Args:
            file_path: Path to file
            file_format: csv, json or parquet
            schema: Optional explicit schema (CSV/JSON); CSV infers otherwise
            header: Whether the CSV has a header row
            delimiter: CSV field delimiter

        Raises:
            ValueError: If the file format is unsupported
        """
        file_format = file_format.lower()
        reader = self.spark.read
        if schema is not None:
            reader = reader.schema(schema)

        if file_format == "csv":
            if schema is None:
                reader = reader.option("inferSchema", "true")
            return (
                reader.option("header", str(header).lower())
                .option("delimiter", delimiter)
                .option("mode", "FAILFAST")
                .option("timestampFormat", "yyyy-MM-dd'T'HH:mm:ss")
                .csv(file_path)
            )
        if file_format == "json":
            return reader.json(file_path)
        if file_format == "parquet":
            return self.spark.read.parquet(file_path)
        raise ValueError(f"Unsupported file format: {file_format}")


class SparkExtractReader(SourceReader):
    """
    SourceReader over a directory of table extracts.

    Missing extracts read as empty tables (logged as a warning).
    """

    def __init__(self, spark: SparkSession, extract_dir: str, file_format: str = "csv"):
        """
        Args:
            spark: Active Spark session
            extract_dir: Directory holding one extract per table
            file_format: csv, json or parquet
        """
        if file_format.lower() not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported file format: {file_format}")
        self.extract_dir = Path(validate_file_path(extract_dir, "extract_dir"))
        self.file_format = file_format.lower()
        self.file_reader = FileReader(spark)

    def extract_path(self, table_name: str) -> Path:
        return self.extract_dir / f"{table_name}.{self.file_format}"

    def _read_rows(self, table_name: str) -> Iterable[dict[str, Any]]:
        path = self.extract_path(table_name)
        if not path.exists():
            logger.warning(f"No extract for {table_name} at {path}")
            return []

        df = self.file_reader.read(str(path), file_format=self.file_format)
        rows = [row.asDict() for row in df.collect()]
        logger.info(f"Read {len(rows)} rows from {path}")
        return rows
