"""Command-line interface for the Point Pattern Analysis pipeline"""
