"""Tests for harbor-resource."""
