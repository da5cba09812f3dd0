"""Endpoints and limits for the Google Business Profile integration."""

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

BUSINESS_MANAGE_SCOPE = "https://www.googleapis.com/auth/business.manage"

ACCOUNTS_URL = "https://mybusinessaccountmanagement.googleapis.com/v1/accounts"
LOCATIONS_URL = "https://mybusinessbusinessinformation.googleapis.com/v1/{account_name}/locations"
LOCATIONS_READ_MASK = "name,title,storefrontAddress"
REVIEWS_URL = "https://mybusiness.googleapis.com/v4/{location_name}/reviews"
REPLY_URL = "https://mybusiness.googleapis.com/v4/{review_name}/reply"

# Refresh when the access token expires within this window
TOKEN_EXPIRY_SKEW_SECONDS = 300

MAX_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 1.0

SYNC_PAGE_SIZE = 50
SYNC_MAX_PAGES = 10

STATE_TTL_SECONDS = 600
