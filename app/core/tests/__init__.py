"""Tests for core infrastructure: service results, serializer mixins, health check."""
