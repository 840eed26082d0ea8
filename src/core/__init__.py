"""Core domain package for channel-portal.

Core contains ingestion, hashtag classification, credential and session
logic without any Telegram or storage-specific code, keeping the business
logic portable.
"""
