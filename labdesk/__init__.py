"""Appointment lifecycle coordination for a lab-service back office."""

__version__ = "0.1.0"
