"""Database models"""
