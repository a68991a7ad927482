#!/usr/bin/env python3
"""
Environment configuration for the Snowball API
"""

import os
from dotenv import load_dotenv

load_dotenv()

# MongoDB
MONGODB_URI = os.getenv('MONGODB_URI', 'mongodb://localhost:27017/')
MONGODB_DB_NAME = os.getenv('MONGODB_DB_NAME', 'snowball_db')

# Sessions
JWT_SECRET = os.getenv('JWT_SECRET', 'change-me')
JWT_ALGORITHM = "HS256"
JWT_EXPIRES_HOURS = int(os.getenv('JWT_EXPIRES_HOURS', '24'))

# LLM providers
LLM_PROVIDER = os.getenv('LLM_PROVIDER', 'openai')
OPENAI_API_KEY = os.getenv('OPENAI_API_KEY')
ANTHROPIC_API_KEY = os.getenv('ANTHROPIC_API_KEY')
DEFAULT_OPENAI_MODEL = os.getenv('OPENAI_MODEL', 'gpt-4o-mini')
DEFAULT_ANTHROPIC_MODEL = os.getenv('ANTHROPIC_MODEL', 'claude-sonnet-4-5-20250929')

# Keyword research
DATAFORSEO_API_URL = os.getenv('DATAFORSEO_API_URL', 'https://api.dataforseo.com')
DATAFORSEO_LOGIN = os.getenv('DATAFORSEO_LOGIN')
DATAFORSEO_PASSWORD = os.getenv('DATAFORSEO_PASSWORD')

# Banner images
UNSPLASH_ACCESS_KEY = os.getenv('UNSPLASH_ACCESS_KEY')

# Google sign-in, Analytics and Search Console
GOOGLE_CLIENT_ID = os.getenv('GOOGLE_CLIENT_ID')
GOOGLE_CLIENT_SECRET = os.getenv('GOOGLE_CLIENT_SECRET')

# CMS OAuth apps
SHOPIFY_API_KEY = os.getenv('SHOPIFY_API_KEY')
SHOPIFY_API_SECRET = os.getenv('SHOPIFY_API_SECRET')
SHOPIFY_SCOPES = os.getenv('SHOPIFY_SCOPES', 'read_content,write_content')
SHOPIFY_API_VERSION = os.getenv('SHOPIFY_API_VERSION', '2024-10')
WEBFLOW_CLIENT_ID = os.getenv('WEBFLOW_CLIENT_ID')
WEBFLOW_CLIENT_SECRET = os.getenv('WEBFLOW_CLIENT_SECRET')
WORDPRESS_CLIENT_ID = os.getenv('WORDPRESS_CLIENT_ID')
WORDPRESS_CLIENT_SECRET = os.getenv('WORDPRESS_CLIENT_SECRET')

# Billing
STRIPE_SECRET_KEY = os.getenv('STRIPE_SECRET_KEY')
STRIPE_PUBLISHABLE_KEY = os.getenv('STRIPE_PUBLISHABLE_KEY')

# Public URLs
APP_URL = os.getenv('APP_URL', 'http://localhost:8000').rstrip('/')
FRONTEND_URL = os.getenv('FRONTEND_URL', 'http://localhost:5173').rstrip('/')
PUBLIC_URL = os.getenv('PUBLIC_URL')
GOOGLE_REDIRECT_URI = os.getenv('GOOGLE_REDIRECT_URI', f"{APP_URL}/api/v1/analytics/auth/google/callback")
WORDPRESS_REDIRECT_URI = os.getenv('WORDPRESS_REDIRECT_URI', f"{APP_URL}/api/v1/wordpress/callback")

# Scheduler
AUTO_PUBLISH_ENABLED = os.getenv('AUTO_PUBLISH_ENABLED', 'true').lower() == 'true'

# Logging
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
LOG_FORMAT = os.getenv('LOG_FORMAT', 'console')

CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
    FRONTEND_URL,
]
