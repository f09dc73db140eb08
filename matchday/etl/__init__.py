"""ETL module for fixture and match event ingestion."""

from matchday.etl.api_football import APIFootballClient
from matchday.etl.base import FootballDataClient
from matchday.etl.pipeline import IngestionConfig, IngestionMetrics, IngestionPipeline

__all__ = [
    "FootballDataClient",
    "APIFootballClient",
    "IngestionConfig",
    "IngestionMetrics",
    "IngestionPipeline",
]
