"""Recoverable failure conditions of the recording pipeline.

None of these are fatal: each leaves previously committed state untouched.
"""


class BeaconError(Exception):
    code = "error"
    message = "Something went wrong."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class InputEmptyError(BeaconError):
    code = "input_empty"


class NoSpeechError(InputEmptyError):
    code = "no_speech"
    message = "No speech detected. Please try again."


class NoConsentedSpeechError(InputEmptyError):
    code = "no_consented_speech"
    message = "No consented speech detected. Please approve a speaker."


class OracleTransportError(BeaconError):
    code = "transport_failure"
    message = "Failed to analyze transcript. Please check your connection."


class SessionNotFoundError(BeaconError, LookupError):
    code = "not_found"
    message = "Report not found."


class ReportFinalizedError(BeaconError):
    code = "report_finalized"
    message = "Report is already completed."


class ItemNotFoundError(BeaconError, LookupError):
    code = "item_not_found"
    message = "Action item not found on this report."


class TranscriptionUnavailableError(BeaconError):
    code = "transcription_unavailable"
    message = "Could not reach the transcription service. Audio is not being transcribed."


class ReportInProgressError(BeaconError):
    code = "report_in_progress"
    message = "Report is still being recorded."
