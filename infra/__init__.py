"""
ESG Reporting — Infrastructure

Cross-cutting support shared by the reporting engine: structured JSON
logging, three-tier YAML configuration, and retry/backoff for deferred
work. Nothing in this package knows about cycles or exceptions.
"""
