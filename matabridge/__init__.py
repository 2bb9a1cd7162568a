"""matabridge: storage sync and message relay for the MATA vault extension."""

__version__ = "1.7.5"
