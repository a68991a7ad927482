"""
Snowball - AI brand visibility and content publishing backend

Architecture:
- app.py            - FastAPI application, middleware and router wiring
- auth.py           - Password hashing, JWT sessions, auth middleware
- brand_analysis.py - Domain info, categories, competitors, prompts, AI responses
- share_of_voice.py - Mention extraction and share-of-voice math
- keyword_research.py - DataForSEO keyword research and filtering
- content_calendar.py - Calendar generation, outlines, blogs, publishing
- cms_integration.py  - WordPress.com, Webflow, Shopify and Wix publishers
- auto_publisher.py   - Daily scheduled publishing of approved entries
- google_analytics.py - GA4 and Search Console client
- stripe_service.py   - Stripe REST client
- client.py           - Python client for the Snowball REST API
"""

__version__ = "1.0.0"
