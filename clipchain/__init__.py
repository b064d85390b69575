"""ClipChain - chained multi-clip AI video generation"""
