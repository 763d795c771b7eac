"""
Application Layer Module
"""

from nrisac.app.application import ApplicationLayer, ApplicationPacket, AppMetadata, TrafficModel

__all__ = [
    "ApplicationLayer",
    "ApplicationPacket",
    "AppMetadata",
    "TrafficModel",
]
