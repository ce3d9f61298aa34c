class SandboxError(Exception):
    '''Base class of every error raised by the sandbox.'''


class ValidationError(SandboxError):
    '''The request is malformed. Nothing has been spawned.'''

    def __init__(self, violations: list[str]):
        self.violations = list(violations)
        super().__init__('; '.join(self.violations) or 'invalid request')


class UnsupportedLanguageError(ValidationError):

    def __init__(self, language: str):
        self.language = language
        super().__init__([f'Unsupported language: {language}'])


class InfrastructureError(SandboxError):
    '''A fault of the judging host, not of the submitted code.'''


class ToolchainNotFoundError(InfrastructureError):
    pass


class ScratchDirectoryError(InfrastructureError):
    pass


class StoreError(InfrastructureError):
    pass


class SubmissionNotFoundError(SandboxError):
    pass


class SandboxClientError(InfrastructureError):
    pass


class SandboxUnavailableError(SandboxClientError):
    pass


class SandboxTimeoutError(SandboxClientError):
    pass


class SandboxResponseError(SandboxClientError):

    def __init__(self, message: str, status_code: int = None,
                 payload: dict = None):
        self.status_code = status_code
        self.payload = payload or {}
        super().__init__(message)
