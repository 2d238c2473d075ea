"""CampusLink: Penn State account linking service."""

__version__ = "0.1.0"
