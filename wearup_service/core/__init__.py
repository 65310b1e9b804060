# Core module
from wearup_service.core.errors import WearUpError
from wearup_service.core.validation import ValidationError
from wearup_service.core.storage import LocalStorage, SupabaseStorage
