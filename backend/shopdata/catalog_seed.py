# Overview: Static catalog loaded on first run when no product snapshot exists.

from __future__ import annotations


SEED_CATEGORIES = [
    {"name": "Tài khoản Gaming", "slug": "gaming", "icon": "🎮"},
    {"name": "Tài khoản Social Media", "slug": "social", "icon": "📱"},
    {"name": "Tài khoản Productivity", "slug": "productivity", "icon": "⚙️"},
]

UNCATEGORIZED_CATEGORY = {"name": "Chưa phân loại", "slug": "uncategorized", "icon": "🏷️"}

# Products are seeded with stock 100 and nothing sold; variants carry
# their own stock.
SEED_PRODUCTS = [
    {
        "id": "premium",
        "title": "Gói Tài Khoản Premium",
        "description": "Full quyền lợi, bảo hành 7 ngày",
        "price": 49000,
        "image_emoji": "🎮",
        "image_url": "/thumbs/premium.svg",
        "badge": "hot",
        "category": "gaming",
        "long_description": (
            "Gói Premium mở khóa toàn bộ tính năng và nhận hỗ trợ ưu tiên. "
            "Phù hợp cho người dùng yêu cầu ổn định và bảo hành."
        ),
        "faqs": [
            {"q": "Bảo hành bao lâu?", "a": "Trong 7 ngày kể từ khi kích hoạt."},
            {"q": "Có đổi được loại khác?", "a": "Liên hệ hỗ trợ để được tư vấn."},
        ],
        "options": [
            {"id": "1month", "label": "1 tháng", "price": 49000, "stock": 100, "kiosk_token": "demo_token_1month"},
            {"id": "3months", "label": "3 tháng - Tiết kiệm 15%", "price": 69000, "stock": 50, "kiosk_token": "demo_token_3months"},
            {"id": "6months", "label": "6 tháng - Tiết kiệm 25%", "price": 84000, "stock": 30, "kiosk_token": "demo_token_6months"},
            {"id": "1year", "label": "1 năm - Tiết kiệm 35%", "price": 109000, "stock": 20, "kiosk_token": "demo_token_1year"},
        ],
    },
    {
        "id": "starter",
        "title": "Gói Starter",
        "description": "Cơ bản, đủ dùng",
        "price": 19000,
        "image_emoji": "✨",
        "image_url": "/thumbs/starter.svg",
        "badge": "new",
        "category": "productivity",
        "long_description": "Gói Starter phù hợp để bắt đầu trải nghiệm dịch vụ với chi phí thấp.",
        "faqs": [{"q": "Có nâng cấp lên Premium?", "a": "Có, bạn có thể nâng cấp sau."}],
        "options": [
            {"id": "basic", "label": "Cơ bản", "price": 19000, "stock": 200, "kiosk_token": "demo_token_basic"},
            {"id": "extended", "label": "Mở rộng - Thêm 5 tính năng", "price": 29000, "stock": 150, "kiosk_token": "demo_token_extended"},
        ],
    },
    {
        "id": "simple-product",
        "title": "Sản phẩm đơn giản",
        "description": "Sản phẩm không có tùy chọn - dùng giá và kho chính",
        "price": 15000,
        "stock": 50,
        "image_emoji": "📱",
        "category": "productivity",
        "long_description": "Sản phẩm đơn giản không có tùy chọn, dùng giá và kho của sản phẩm chính.",
    },
    {
        "id": "tiktok",
        "title": "Tài khoản TikTok",
        "description": "Tài khoản TikTok xác minh cơ bản",
        "image_emoji": "🎵",
        "image_url": "/thumbs/tiktok.svg",
        "category": "social",
        "long_description": "Tài khoản TikTok an toàn, phù hợp seeding và chạy trend.",
        "options": [
            {"id": "unverified-0-1k", "label": "Chưa xác minh, 0-1K followers", "price": 29000, "stock": 50},
            {"id": "unverified-1k-5k", "label": "Chưa xác minh, 1K-5K followers", "price": 37000, "stock": 30},
            {"id": "verified-0-1k", "label": "Đã xác minh (Tick xanh), 0-1K followers", "price": 44000, "stock": 20},
            {"id": "verified-5k-10k", "label": "Đã xác minh (Tick xanh), 5K-10K followers", "price": 64000, "stock": 10},
        ],
    },
    {
        "id": "facebook",
        "title": "Tài khoản Facebook",
        "description": "Facebook cá nhân an toàn, dễ dùng",
        "price": 39000,
        "image_emoji": "📘",
        "image_url": "/thumbs/facebook.svg",
        "category": "social",
    },
    {
        "id": "capcut-pro",
        "title": "Tài khoản CapCut Pro",
        "description": "Mở khóa đầy đủ tính năng Pro",
        "price": 59000,
        "image_emoji": "🎬",
        "image_url": "/thumbs/capcut.svg",
        "category": "productivity",
    },
]

SEED_DEFAULT_STOCK = 100
