"""
Video analysis worker.

Turns a video into frame observations, scenes and a multi-part
analytical report using a remote multimodal inference service.
"""

__version__ = "0.1.0"
