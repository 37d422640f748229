from __future__ import annotations
from typing import Iterable, List


class MontageError(Exception):
    """Base class for every error reported to the user by a montage run."""


class ValidationError(MontageError):
    def __init__(self, problems: Iterable[str]):
        self.problems: List[str] = list(problems)
        super().__init__('Invalid settings: ' + '; '.join(self.problems))


class DecodeError(MontageError):
    def __init__(self, source: str, reason: str = ''):
        self.source = source
        msg = f'Failed to decode image: {source}'
        if reason:
            msg += f' ({reason})'
        super().__init__(msg)


class OcrError(MontageError):
    pass


class SurfaceError(MontageError):
    pass


class EncodeError(MontageError):
    pass


class PipelineFatalError(MontageError):
    pass
