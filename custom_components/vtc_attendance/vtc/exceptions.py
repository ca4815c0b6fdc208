"""Custom exceptions for the VTC attendance integration."""


class VtcError(Exception):
	"""Base exception for VTC errors."""
	pass


class VtcAuthError(VtcError):
	"""Token invalid, expired or rejected."""
	pass


class VtcConnectionError(VtcError):
	"""Connection to the VTC mobile API failed."""
	pass


class VtcDataError(VtcError):
	"""Data parsing or validation error."""
	pass


class StoreError(Exception):
	"""Base exception for attendance store failures."""
	pass


class DuplicateKeyError(StoreError):
	"""A batch insert hit the uniqueness constraint on some rows.

	The rows that did not conflict were still written; ``inserted_count``
	says how many.
	"""
	
	def __init__(self, inserted_count: int, duplicate_keys: list) -> None:
		super().__init__(
			f"{len(duplicate_keys)} duplicate key(s) rejected, {inserted_count} row(s) inserted"
		)
		self.inserted_count = inserted_count
		self.duplicate_keys = list(duplicate_keys)


class VersionConflictError(StoreError):
	"""A version-checked update lost the race against another writer."""
	pass
