"""
Respect Monitor - framing dominance pipeline for contested policy subjects.

Ingests news headlines, opinion polls and official statistics about one
subject, classifies each signal into a competing framing ("decisive
respect"), and folds the per-source aggregates into a weighted judgment of
which framing currently dominates.

Packages:
    pipeline - Taxonomy, classifier, aggregators, dominance, view model, storage, refresh
    ingest - Parallel media and metrics collection
    config - Subject configuration, YAML loading, API keys
    api - FastAPI wrapper around the refresh pipeline
"""

__version__ = "1.2.0"
