"""Facet AI job lifecycle backend."""
