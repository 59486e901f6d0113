"""FCM job records API"""
