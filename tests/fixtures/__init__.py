"""Shared test fixtures: fake plugins and input file builders."""
