GENERIC_TAG = "file"

MIME_TO_TAG = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/svg+xml": "svg",
    "application/pdf": "pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
    "text/plain": "txt",
    "video/mp4": "mp4",
    "video/avi": "avi",
    "video/mov": "mov",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "application/zip": "zip",
    "application/x-rar-compressed": "rar",
}

ICON_CATEGORIES = {
    "document": ("pdf", "doc", "docx", "txt"),
    "image": ("jpg", "jpeg", "png", "gif", "svg"),
    "audio": ("mp3", "wav", "flac"),
    "video": ("mp4", "avi", "mov"),
    "archive": ("zip", "rar", "7z"),
}


def _extension(file_name: str) -> str:
    if not file_name or "." not in file_name:
        return ""
    return file_name.rsplit(".", 1)[1].strip().lower()


def classify(type_metadata: str | None, file_name: str | None) -> str:
    """Map stored type metadata to a short tag such as "png" or "docx".

    The `type` column holds whatever the uploader sent: a full MIME type,
    a bare extension, or nothing. Unmapped MIME types fall back to their
    subtype, and with no usable metadata the filename extension decides.
    Always returns a non-empty tag; "file" when nothing is known.
    """
    tag = (type_metadata or "").strip().lower()

    if "/" in tag:
        tag = MIME_TO_TAG.get(tag) or tag.split("/", 1)[1]

    if not tag or tag == GENERIC_TAG:
        tag = _extension(file_name or "")

    return tag or GENERIC_TAG


def icon_category(type_tag: str) -> str:
    tag = (type_tag or "").lower()
    for category, tags in ICON_CATEGORIES.items():
        if tag in tags:
            return category
    return GENERIC_TAG
