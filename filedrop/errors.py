class UploadError(Exception):
    status_code = 400
    message = "Upload rejected"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class MalformedMultipart(UploadError):
    message = "Malformed multipart request"


class PayloadTooLarge(UploadError):
    status_code = 413
    message = "Payload too large"


class MissingFile(UploadError):
    message = "Please supply a file"


class UnsupportedFileType(UploadError):
    def __init__(self, mime_type: str):
        self.mime_type = mime_type
        super().__init__(f"Unsupported file type: {mime_type}")


class UndeterminedFileType(UploadError):
    message = "File type could not be determined"


class MissingToken(UploadError):
    status_code = 401
    message = "Please supply an authentication token"


class InvalidToken(UploadError):
    status_code = 401
    message = "Invalid authentication token"


class StorageFailure(UploadError):
    status_code = 500
    message = "Internal Server Error"
