"""Async adapter over the ClinicNexus clinic-management REST API."""
