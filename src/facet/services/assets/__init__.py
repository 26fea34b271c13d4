"""Source asset origins."""

from facet.services.assets.google_drive import AssetPayload, GoogleDriveClient

__all__ = ["AssetPayload", "GoogleDriveClient"]
