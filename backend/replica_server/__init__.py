"""Replica server: a catalogue of geospatial layer replicas.

This package tracks snapshot and delta replicas of geospatial layers along
with the ids of the files that make them up. The files themselves live in
external object storage; the service only composes their display URLs.

- Replicas are created hidden and revealed through an explicit update
- Read endpoints filter by layer, geometry, replica type and time window
- Administrative bulk update and delete reach hidden replicas as well
- Deleting a replica removes its files in the same transaction
- PostgreSQL-backed repositories with in-memory twins for tests

See module sub-docstrings for details on architecture and usage.
"""
