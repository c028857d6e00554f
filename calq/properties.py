"""Reserved property names understood by the Calq API.

Action properties are set by callers (or by the client from request data) and
travel inside the user properties blob. API properties are top level fields
of the request body and are always filled in by the client itself.
"""


class ReservedActionProperties:
    sale_value = "$sale_value"
    sale_currency = "$sale_currency"

    device_agent = "$device_agent"
    device_os = "$device_os"
    device_resolution = "$device_resolution"
    device_mobile = "$device_mobile"

    country = "$country"
    region = "$region"
    city = "$city"

    gender = "$gender"
    age = "$age"

    utm_campaign = "$utm_campaign"
    utm_source = "$utm_source"
    utm_medium = "$utm_medium"
    utm_content = "$utm_content"
    utm_term = "$utm_term"


class ReservedApiProperties:
    actor = "actor"
    action_name = "action_name"
    write_key = "write_key"
    user_properties = "properties"
    timestamp = "timestamp"
    old_actor = "old_actor"
    new_actor = "new_actor"
    ip_address = "ip_address"


# Reserved property => query string / form field it is read from
UTM_PARAMETERS = {
    ReservedActionProperties.utm_campaign: "utm_campaign",
    ReservedActionProperties.utm_source: "utm_source",
    ReservedActionProperties.utm_medium: "utm_medium",
    ReservedActionProperties.utm_content: "utm_content",
    ReservedActionProperties.utm_term: "utm_term",
}

# Value sent as the IP when no usable address is known; the server skips geolocation
NO_IP_ADDRESS = "none"

# Top level body fields; never valid as global property keys
API_PROPERTY_NAMES = frozenset(
    value for name, value in vars(ReservedApiProperties).items() if not name.startswith("_")
)
