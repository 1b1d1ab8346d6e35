"""Pydantic request/response models for the DesignHub API."""
