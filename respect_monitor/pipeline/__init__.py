"""
Pipeline - classification, aggregation and dominance for one subject.

Modules:
    taxonomy - Fixed framing catalog and actor-vocabulary translation
    models - Raw items, classified items, aggregates, snapshots, view model
    sources - SourceRef citations and the add-only source registry
    classifier - Keyword classification of media, poll and metric items
    oracle - External (LLM) classification and stance extraction
    passages - Trigger-phrase neighbourhoods in long free text
    media_framing - Media dedup and recency/confidence weighted shares
    validate_poll - Fail-closed validation gate for raw polls
    public_polling - Option-level poll mapping and the public prior
    reality_metrics - Metric deltas and per-framing readings
    dominance - Weighted vote over media, public and institutional sources
    view_model - Party cards and the published subject view model
    storage - Append-only JSON array store per subject
    refresh - End-to-end refresh for one subject (CLI entrypoint)
"""
