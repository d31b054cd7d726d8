from catalogfeed.database.tables.base_class import Base
from catalogfeed.database.tables.job_table import FeedJobs
from catalogfeed.database.tables.product_table import ProductCountryPrices, Products

__all__ = ["Base", "FeedJobs", "ProductCountryPrices", "Products"]
