"""Geo Proximity Service: register points and query what lies within a radius."""
