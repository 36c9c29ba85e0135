"""
The watch layer maps changes to the objects a CR depends on (image streams and
binding secrets) back to the CRs which need to be reconciled.
"""

# Local
from .handler import EnqueueRequestsForCustomIndexField
from .index import (
    BINDINGS_RESOURCE_REF_INDEX,
    IMAGE_STREAM_NAME_INDEX,
    FieldIndexer,
    index_application_image,
    index_binding_resource_ref,
    parse_image_reference,
)
from .matchers import BindingSecretMatcher, ImageStreamMatcher
from .registration import Watch, application_kinds, setup
