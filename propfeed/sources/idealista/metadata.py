"""
Idealista feed layout metadata.

Declares where each canonical field lives in the feed records. Every entry is
an ordered list of candidate paths over the canonical tree (lowercase keys);
the first one yielding a non-empty value wins, otherwise the default applies.

The record container key has changed between feed revisions, so container
shapes are data too. Supporting a new revision means adding paths here, not
code in the parser.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class FieldRule:
    """Ordered candidate paths for one canonical field."""
    paths: Tuple[str, ...]
    default: Optional[Any] = None


# Where the list of records sits in the decoded feed, most specific first.
# Paths only descend through mappings: "properties.property" matches
# <properties><property/>...</properties>, never a key inside a record of a
# {"properties": [...]} array.
CONTAINER_PATHS: Tuple[str, ...] = (
    "ads.ad",
    "properties.property",
    "inmuebles.inmueble",
    "properties",
    "inmuebles",
    "property",
    "inmueble",
)

# Root keys that denote a feed, even when they hold no records
CONTAINER_ROOTS: Tuple[str, ...] = ("ads", "properties", "inmuebles")

HOUSING_PATHS: Tuple[str, ...] = ("property.housing", "housing")

FIELD_RULES: Dict[str, FieldRule] = {
    "id": FieldRule((
        "id",
        "propertyid",
        "propertycode",
        "codigo",
    )),
    "reference": FieldRule((
        "externalreference",
        "reference",
        "referencia",
    )),
    "title": FieldRule((
        "title",
        "titulo",
        "name",
        "nombre",
        "headline",
    )),
    "property_type": FieldRule((
        "propertytype",
        "property.type",
        "tipo",
        "type",
        "category",
        "categoria",
    ), default="homes"),
    "operation": FieldRule((
        "operation",
        "operacion",
        "transactiontype",
        "tipotransaccion",
    ), default="sale"),
    "price": FieldRule((
        "prices.byoperation.sale.price",
        "prices.byoperation.rent.price",
        "price",
        "precio",
        "priceinfo.price",
        "amount",
        "valor",
    ), default=0),
    "currency": FieldRule((
        "prices.byoperation.sale.currency",
        "prices.byoperation.rent.currency",
        "currency",
        "moneda",
        "priceinfo.currency",
    ), default="EUR"),
    "street": FieldRule((
        "property.address.streetname",
        "address.streetname",
        "property.myaddress.streetname",
        "property.location.address",
        "location.address",
        "address",
        "direccion",
    ), default=""),
    "city": FieldRule((
        "property.address.town",
        "property.address.city",
        "property.location.city",
        "location.city",
        "location.ciudad",
        "city",
        "ciudad",
    ), default="Madrid"),
    "province": FieldRule((
        "property.address.province",
        "property.location.province",
        "location.province",
        "location.provincia",
        "province",
        "provincia",
    ), default="Madrid"),
    "postal_code": FieldRule((
        "property.address.postalcode",
        "address.postalcode",
        "property.myaddress.postalcode",
        "property.location.postalcode",
        "location.postalcode",
        "postalcode",
        "codigopostal",
    ), default=""),
    "latitude": FieldRule((
        "property.address.coordinates.latitude",
        "address.coordinates.latitude",
        "property.location.latitude",
        "location.latitude",
        "latitude",
        "lat",
    )),
    "longitude": FieldRule((
        "property.address.coordinates.longitude",
        "address.coordinates.longitude",
        "property.location.longitude",
        "location.longitude",
        "longitude",
        "lng",
    )),
    "rooms": FieldRule((
        "property.housing.roomnumber",
        "housing.roomnumber",
        "property.housing.bedroomnumber",
        "property.housing.bedromnumber",
        "housing.bedroomnumber",
        "rooms",
        "habitaciones",
        "bedrooms",
        "dormitorios",
        "numrooms",
    ), default=0),
    "bathrooms": FieldRule((
        "property.housing.bathnumber",
        "housing.bathnumber",
        "bathrooms",
        "banos",
        "numbathrooms",
        "aseos",
    ), default=0),
    "area_constructed": FieldRule((
        "property.housing.propertyarea",
        "housing.propertyarea",
        "size",
        "superficie",
        "area",
        "squaremeters",
        "m2",
    ), default=0),
    "usable_area": FieldRule((
        "property.housing.usablearea",
        "housing.usablearea",
        "usablearea",
        "areautil",
    )),
    "floor": FieldRule((
        "property.address.floornumber",
        "address.floornumber",
        "property.myaddress.floornumber",
        "floor",
        "planta",
    )),
    "construction_year": FieldRule((
        "property.housing.constructionyear",
        "housing.constructionyear",
        "constructionyear",
        "anoconstruccion",
    )),
    "energy_rating": FieldRule((
        "property.energycertificate.rating",
        "energyrating",
        "calificacionenergetica",
        "energycertificate",
        "certificadoenergetico",
    )),
    "status": FieldRule((
        "status",
        "estado",
        "state",
    ), default="active"),
    "published_at": FieldRule((
        "publisheddate",
        "fechapublicacion",
        "createddate",
        "fechacreacion",
        "date",
        "fecha",
    )),
    "modified_at": FieldRule((
        "modificationdate",
        "modifieddate",
        "lastmodified",
        "fechamodificacion",
    )),
}

# Image and description sources
MULTIMEDIA_PATHS: Tuple[str, ...] = ("multimedias", "property.multimedias")
PICTURE_URL_PATHS: Tuple[str, ...] = ("multimediapath", "url", "path")
PICTURE_TAG_PATHS: Tuple[str, ...] = ("multimediatag", "tag")
PICTURE_SIZE_PATHS: Tuple[str, ...] = ("size", "filesize", "bytes")
FLAT_IMAGE_PATHS: Tuple[str, ...] = ("images", "imagenes", "photos", "fotos")

COMMENT_PATHS: Tuple[str, ...] = ("comments", "property.comments")
COMMENT_TEXT_PATHS: Tuple[str, ...] = ("propertycomment", "text", "comment")
FLAT_DESCRIPTION_PATHS: Tuple[str, ...] = (
    "description",
    "descripcion",
    "details",
    "detalles",
    "comentario",
)

# Feed language codes
DESCRIPTION_LANGUAGES: Dict[str, str] = {
    "0": "es",
    "1": "en",
}

PROPERTY_TYPE_MAP: Dict[str, str] = {
    "piso": "homes",
    "apartamento": "homes",
    "casa": "homes",
    "chalet": "homes",
    "duplex": "homes",
    "atico": "homes",
    "estudio": "homes",
    "loft": "homes",
    "flat": "homes",
    "house": "homes",
    "local": "premises",
    "oficina": "offices",
    "office": "offices",
    "garaje": "garages",
    "garage": "garages",
    "trastero": "storageRooms",
}

# Canonical type names, accepted as-is
PROPERTY_TYPES = frozenset(PROPERTY_TYPE_MAP.values())

OPERATION_MAP: Dict[str, str] = {
    "venta": "sale",
    "sale": "sale",
    "alquiler": "rent",
    "rent": "rent",
}

INACTIVE_STATUSES = frozenset({"inactive", "inactivo", "inactiva", "disabled", "retired"})

# housing flag -> amenity name
AMENITY_FLAGS: Dict[str, str] = {
    "hasboxroom": "box_room",
    "hasterrace": "terrace",
    "haswardrobe": "wardrobe",
    "hasairconditioning": "air_conditioning",
    "hasgarden": "garden",
    "hasswimmingpool": "swimming_pool",
    "haslift": "lift",
    "hasbalcony": "balcony",
    "haschimney": "chimney",
    "arepetsallowed": "pets_allowed",
    "ispenthouse": "penthouse",
    "isduplex": "duplex",
    "isstudio": "studio",
    "parkingspace.hasparkingspace": "parking",
}
