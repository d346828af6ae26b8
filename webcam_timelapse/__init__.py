"""Park webcam capture and time-lapse animation scheduling."""

__version__ = "0.1.0"
