"""
Derived-index package.

This package holds the pieces that turn records into store keys:
- keys: deterministic key schema for primary and derived entries
- tokenizer: analyzer pipeline producing search token sets
- maintainer: computes and executes derived-index batches
- ranking: optional scoring and highlighting of search hits
"""
