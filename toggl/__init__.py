"""Toggl Track API access"""
from toggl.client import TogglClient

__all__ = ['TogglClient']
