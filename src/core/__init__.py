"""
Core routing logic for the blob endpoint.

This module is framework-agnostic - it doesn't import FastAPI, boto3,
or httpx. Handlers talk to storage through protocols, so the router can
be tested with in-memory collaborators.
"""
