"""Field names in the documents this package reads and writes.

Collection names are configurable (see ``StoreConfig``); the field names
below are part of the contract with the mobile client.
"""

# Notification record fields
FIELD_TITLE = "title"
FIELD_BODY = "body"
FIELD_DATA = "data"
FIELD_CREATED_AT = "createdAt"
FIELD_IS_READ = "isRead"
FIELD_READ_AT = "readAt"
FIELD_IMAGE_URLS = "imageUrls"
FIELD_FILE_ATTACHMENTS = "fileAttachments"

# Keys inside a notification's data payload
DATA_TYPE = "type"
DATA_SUBJECT_ID = "id"
DATA_NOTIFICATION_ID = "notificationId"
