"""
ReelStream - adaptive-streaming transcoding pipeline.

Takes one uploaded source video and publishes a multi-bitrate HLS package
(tiers, master manifest, thumbnail, muted preview) to object storage.
"""

__version__ = "1.0.0"
