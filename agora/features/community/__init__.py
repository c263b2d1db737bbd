"""Community content pipeline: validate, format, summarize, rank."""
