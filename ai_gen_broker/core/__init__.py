"""
Core modules for the generation broker.

This package contains quota enforcement, prompt composition, model
classification, the provider fallback chain and the generation service.
"""
