"""Update Pilot - drives a content-management instance through its update procedure."""

__version__ = "0.1.0"
