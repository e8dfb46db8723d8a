"""Test suite for the tire ML backend."""
